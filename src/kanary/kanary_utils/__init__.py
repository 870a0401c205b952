"""
Kanary工具模块
该模块组织为以下几个子模块：
- config: 配置管理
- errors: 错误分类与退出码
- output: 输出格式化与日志
- retry: 有界指数退避
"""
import colorama
from rich.traceback import install as install_rich_traceback

# 初始化colorama以支持跨平台的彩色文本
colorama.init()
# 安装rich traceback处理器以获得更好的错误信息
install_rich_traceback()
