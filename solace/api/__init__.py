"""
Solace API
FastAPI による HTTP / WebSocket インターフェース
"""
