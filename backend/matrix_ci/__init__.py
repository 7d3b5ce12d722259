"""
matrix-ci - 多包项目的工具链矩阵流水线引擎

模块结构：
- config/     流水线定义与运行期配置
- models/     数据模型定义
- tooling/    外部协作方适配（构建工具/密钥/数据库）
- pipeline/   矩阵展开、步骤编排、结论分类与成功后动作
- notify/     生命周期通知与状态持久化
- cli         命令行入口
"""

__version__ = "0.1.0"
