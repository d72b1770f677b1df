"""
Job Crawler

Single-site job board crawler: walks listing pages, follows job detail
links and writes normalized job records.
"""

__version__ = "1.0.0"
