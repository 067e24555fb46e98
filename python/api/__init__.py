"""
Kurator REST API (FastAPI).
"""
