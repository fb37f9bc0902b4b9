"""ewebuild - 声明式构建规格解释器与多包构建编排器"""

__version__ = "0.1.0"
