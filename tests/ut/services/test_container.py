"""ServiceContainer 单元测试"""

from __future__ import annotations

from ewebuild.services.container import ServiceContainer, get_container, reset_container


class TestServiceContainer:
    def test_lazy_loading(self, cfg) -> None:
        c = ServiceContainer(config=cfg)
        assert len(c._instances) == 0
        _ = c.resolver
        assert "resolver" in c._instances
        assert "cache" in c._instances

    def test_shared_instances(self, cfg) -> None:
        c = ServiceContainer(config=cfg)
        assert c.pipeline.steps.resolver is c.resolver
        assert c.runner.pipeline is c.pipeline
        assert c.resolver.cache is c.cache

    def test_config_flows_into_services(self, cfg) -> None:
        cfg.check_policy = "permissive"
        cfg.fetch_workers = 2
        c = ServiceContainer(config=cfg)
        assert c.executor.check_policy == "permissive"
        assert c.resolver.max_workers == 2
        assert str(c.emitter.output_dir) == cfg.output_dir

    def test_injected_downloader(self, cfg, downloader) -> None:
        c = ServiceContainer(config=cfg, downloader=downloader)
        assert c.resolver.downloader is downloader

    def test_global_singleton(self, cfg) -> None:
        reset_container()
        a = get_container()
        assert a is get_container()
        assert a.config is cfg
        reset_container()
        assert get_container() is not a
