"""
Revision Engine Tests Package
=============================
Test suite for the snapshot differ, change tracker and HTTP layer.

Run all tests: python3 -m pytest tests/ -v
Run specific: python3 -m pytest tests/test_tracker.py -v
"""
