"""包产出模块"""

from ewebuild.services.package.emitter import PackageEmitter

__all__ = ["PackageEmitter"]
