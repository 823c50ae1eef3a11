"""执行引擎层（engine）。

统一入口：`TradingEngine.run() -> EngineResult`；
决策与提交逻辑在 `decision_engine` / `session`，命令行入口由仓库根目录 `main.py` 承载。
"""
