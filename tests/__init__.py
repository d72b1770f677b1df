"""
Test Suite

Unit and integration tests for the job crawler.
"""
