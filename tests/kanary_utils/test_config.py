"""配置管理测试"""

import pytest

from kanary.kanary_utils import config
from kanary.kanary_utils.config import CaseInsensitiveDict
from kanary.kanary_utils.errors import KanaryError


class TestCaseInsensitiveDict:
    """大小写不敏感字典测试"""

    def test_lookup_ignores_case(self) -> None:
        data = CaseInsensitiveDict({"Prometheus_URL": "http://p"})
        assert data["prometheus_url"] == "http://p"
        assert "PROMETHEUS_URL" in data
        assert list(data) == ["Prometheus_URL"]

    def test_delete(self) -> None:
        data = CaseInsensitiveDict({"a": 1})
        del data["A"]
        assert len(data) == 0


class TestGetters:
    """配置读取函数测试"""

    def test_defaults(self) -> None:
        assert config.get_namespace() == "default"
        assert config.get_cluster_mode() == "kubernetes"
        assert config.get_api_port() == 8787
        assert config.get_api_url() == "http://127.0.0.1:8787"
        assert config.get_apply_timeout() == 30.0
        assert config.get_retry_attempts() == 4
        assert config.get_retention_seconds() == 3600.0
        assert config.get_log_level() == "INFO"
        assert config.get_success_query() is None

    def test_set_config(self) -> None:
        config.set_config("namespace", "shop")
        config.set_config("CLUSTER_MODE", "Memory")
        assert config.get_namespace() == "shop"
        assert config.get_cluster_mode() == "memory"


class TestLoadConfig:
    """配置文件加载测试"""

    def test_missing_file_gives_defaults(self, temp_dir) -> None:
        data = config.load_config(str(temp_dir / "absent.yaml"))
        assert data == {}
        assert config.get_namespace() == "default"

    def test_yaml_file(self, temp_dir) -> None:
        path = temp_dir / "config.yaml"
        path.write_text("namespace: shop\napi_port: 9000\n", encoding="utf-8")
        config.load_config(str(path))
        assert config.get_namespace() == "shop"
        assert config.get_api_port() == 9000

    def test_env_overrides_file(self, temp_dir, monkeypatch) -> None:
        path = temp_dir / "config.yaml"
        path.write_text("retry_attempts: 2\n", encoding="utf-8")
        monkeypatch.setenv("KANARY_RETRY_ATTEMPTS", "7")
        monkeypatch.setenv("KANARY_NAMESPACE", "prod")
        config.load_config(str(path))
        assert config.get_retry_attempts() == 7
        assert config.get_namespace() == "prod"

    def test_config_path_from_env(self, temp_dir, monkeypatch) -> None:
        path = temp_dir / "other.yaml"
        path.write_text("log_level: debug\n", encoding="utf-8")
        monkeypatch.setenv("KANARY_CONFIG", str(path))
        config.load_config()
        assert config.get_log_level() == "DEBUG"

    def test_invalid_yaml(self, temp_dir) -> None:
        path = temp_dir / "broken.yaml"
        path.write_text("namespace: [unclosed\n", encoding="utf-8")
        with pytest.raises(KanaryError):
            config.load_config(str(path))

    def test_non_mapping(self, temp_dir) -> None:
        path = temp_dir / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(KanaryError):
            config.load_config(str(path))
