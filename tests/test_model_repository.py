"""
Unit tests for model_repository.py module.
"""

from llamactl.frameworks_drivers.model_repository import ModelRepository


class TestModelRepository:
    """Test ModelRepository class."""

    def test_list_models_sorted_by_mtime(self, repository, make_model):
        """Test that models are listed most recently modified first."""
        make_model("old-model", mtime=1_000)
        make_model("new-model", mtime=3_000)
        make_model("mid-model", mtime=2_000)

        names = [model.name for model in repository.list_models()]

        assert names == ["new-model", "mid-model", "old-model"]

    def test_list_models_ignores_other_files(self, repository, models_dir, make_model):
        """Test that only .gguf files are listed."""
        make_model("llama")
        (models_dir / "README.md").write_text("notes")
        (models_dir / "subdir.gguf").mkdir()

        assert [model.name for model in repository.list_models()] == ["llama"]

    def test_list_models_missing_directory(self, temp_dir):
        """Test listing a directory that does not exist."""
        assert ModelRepository(temp_dir / "missing").list_models() == []

    def test_model_path_and_exists(self, repository, models_dir, make_model):
        make_model("llama")
        assert repository.model_path("llama") == models_dir / "llama.gguf"
        assert repository.exists("llama") is True
        assert repository.exists("mistral") is False

    def test_fingerprint(self, repository, make_model):
        make_model("llama", mtime=1_234, content=b"GGUF1234")
        fingerprint = repository.fingerprint("llama")
        assert fingerprint.size == 8
        assert fingerprint.mtime == 1_234
        assert repository.fingerprint("missing") is None
