"""
FastAPI layer for the Partner Duplicate Detection System.
"""
