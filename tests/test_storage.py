"""Tests for tts_module.storage — temp audio artifacts."""

from tts_module.storage import clear_audio_files, new_audio_path


class TestNewAudioPath:
    def test_creates_directory_and_unique_names(self, audio_dir):
        first = new_audio_path()
        second = new_audio_path()
        assert audio_dir.is_dir()
        assert first != second
        assert first.suffix == ".wav"
        assert first.is_absolute()
        assert first.parent == audio_dir.resolve()

    def test_explicit_directory(self, tmp_path):
        path = new_audio_path(".pcm", tmp_path / "other")
        assert path.parent == (tmp_path / "other").resolve()
        assert path.suffix == ".pcm"


class TestClearAudioFiles:
    def test_missing_directory(self, audio_dir):
        assert clear_audio_files() == 0

    def test_removes_files_only(self, audio_dir):
        audio_dir.mkdir()
        (audio_dir / "a.wav").write_bytes(b"x")
        (audio_dir / "b.wav").write_bytes(b"y")
        (audio_dir / "keep").mkdir()

        assert clear_audio_files() == 2
        assert [p.name for p in audio_dir.iterdir()] == ["keep"]
