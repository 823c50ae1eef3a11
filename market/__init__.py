"""行情层：有界价格历史与行情源客户端。"""
