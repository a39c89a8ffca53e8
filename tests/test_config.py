"""
Tests for configuration loading.
"""

from semantic_dupes.config import (
    DEFAULT_BASE_URL,
    IndexerConfig,
    find_config_file,
    load_config,
    resolve_config,
)


class TestIndexerConfig:
    """Defaults and construction from a config table."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("OLLAMA_HOST", raising=False)
        config = IndexerConfig()

        assert config.model == "nomic-embed-text"
        assert config.base_url == DEFAULT_BASE_URL
        assert config.min_lines == 3
        assert config.max_lines == 150
        assert config.kinds is None

    def test_ollama_host_env(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_HOST", "http://gpu-box:11434")
        assert IndexerConfig().base_url == "http://gpu-box:11434"

    def test_from_mapping(self):
        config = IndexerConfig.from_mapping({
            "model": "all-minilm",
            "min-lines": 5,
            "exclude": "**/stories/**",
            "threshold": 0.9,
        })

        assert config.model == "all-minilm"
        assert config.min_lines == 5
        assert config.exclude == ["**/stories/**"]

    def test_merged_ignores_none(self):
        config = IndexerConfig(model="all-minilm").merged(model=None, batch_size=32)

        assert config.model == "all-minilm"
        assert config.batch_size == 32

    def test_chunking_fingerprint(self):
        base = IndexerConfig()

        assert base.chunking_fingerprint() == IndexerConfig(batch_size=99).chunking_fingerprint()
        assert base.chunking_fingerprint() != IndexerConfig(max_lines=80).chunking_fingerprint()
        assert IndexerConfig(kinds=["hook", "component"]).chunking_fingerprint()["kinds"] == ["component", "hook"]


class TestConfigFiles:
    """.sdupesrc / .sdupes.toml discovery."""

    def test_find_in_parent(self, tmp_path):
        (tmp_path / ".sdupes.toml").write_text("[sdupes]\n")
        nested = tmp_path / "src" / "components"
        nested.mkdir(parents=True)

        assert find_config_file(nested) == tmp_path / ".sdupes.toml"

    def test_rc_file_wins(self, tmp_path):
        (tmp_path / ".sdupesrc").write_text("[sdupes]\n")
        (tmp_path / ".sdupes.toml").write_text("[sdupes]\n")

        assert find_config_file(tmp_path) == tmp_path / ".sdupesrc"

    def test_load_section(self, tmp_path):
        (tmp_path / ".sdupesrc").write_text(
            '[sdupes]\nmodel = "mxbai-embed-large"\nthreshold = 0.9\n\n[other]\nmodel = "ignored"\n'
        )

        assert load_config(tmp_path) == {"model": "mxbai-embed-large", "threshold": 0.9}

    def test_broken_file_is_ignored(self, tmp_path):
        (tmp_path / ".sdupesrc").write_text("[sdupes\nmodel = ")

        assert load_config(tmp_path) == {}

    def test_resolve_config(self, tmp_path):
        (tmp_path / ".sdupesrc").write_text('[sdupes]\nmodel = "all-minilm"\nmax_lines = 80\n')

        config = resolve_config(tmp_path, max_lines=40, model=None)

        assert config.model == "all-minilm"
        assert config.max_lines == 40
