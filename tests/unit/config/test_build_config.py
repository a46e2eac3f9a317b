"""Unit tests for build config loading and validation."""

import json

import pytest

from bootforge.config import BuildConfig, BuildMode, ConfigError, load_config


class TestBuildConfigParsing:
    """Test cases for BuildConfig.from_dict and from_file."""

    def test_from_dict(self, config_data):
        """Test every field is parsed."""
        config = BuildConfig.from_dict(config_data)
        assert config.version == "1.2.0"
        assert config.mode is BuildMode.STATIC
        assert config.architectures == ["arm64-v8a", "x86_64"]
        assert config.compression == "xz"
        assert config.static_options.libc == "musl"
        assert config.linux_native_options.linker_path == "/lib/ld-linux-aarch64.so.1"
        assert list(config.packages) == ["busybox"]
        assert config.packages["busybox"].build_static is True

    def test_defaults(self):
        """Test optional sections fall back to defaults."""
        config = BuildConfig.from_dict({"version": "1.0.0", "buildMode": "android-native", "architectures": ["x86"]})
        assert config.compression == "xz"
        assert config.static_options.optimization_level == "Os"
        assert config.linux_native_options.lib_paths == ["/lib", "/usr/lib"]
        assert config.android_native_options.repository == "termux/termux-packages"
        assert config.packages == {}

    def test_from_dict_rejects_non_object(self):
        """Test a JSON array is rejected."""
        with pytest.raises(ConfigError):
            BuildConfig.from_dict(["static"])

    def test_from_dict_rejects_bad_packages(self):
        """Test packages must be an object of objects."""
        with pytest.raises(ConfigError):
            BuildConfig.from_dict({"packages": ["busybox"]})
        with pytest.raises(ConfigError):
            BuildConfig.from_dict({"packages": {"busybox": "1.36.1"}})

    def test_from_file_missing(self, tmp_path):
        """Test a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            BuildConfig.from_file(tmp_path / "missing.json")

    def test_from_file_invalid_json(self, tmp_path):
        """Test malformed JSON raises ConfigError."""
        path = tmp_path / "build-config.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid JSON"):
            BuildConfig.from_file(path)

    def test_resolved_options_per_mode(self, build_config):
        """Test the options that feed cache keys."""
        assert build_config.resolved_options(BuildMode.STATIC) == {"libc": "musl", "optimizationLevel": "Os"}
        assert build_config.resolved_options(BuildMode.LINUX_NATIVE)["linkerPath"] == "/lib/ld-linux-aarch64.so.1"
        assert build_config.resolved_options(BuildMode.ANDROID_NATIVE) == {"bootstrapTag": None}

    def test_linker_for(self, build_config):
        """Test the configured linker only applies to the arch it names."""
        build_config.linux_native_options.linker_path = "/usr/lib/ld-linux-aarch64.so.1"
        assert build_config.linker_for("arm64-v8a") == "/usr/lib/ld-linux-aarch64.so.1"
        assert build_config.linker_for("x86_64") == "/lib64/ld-linux-x86-64.so.2"
        build_config.linux_native_options.linker_path = None
        assert build_config.linker_for("x86") == "/lib/ld-linux.so.2"


class TestBuildConfigValidation:
    """Test cases for BuildConfig.validate."""

    def test_valid_config(self, build_config):
        """Test a complete static config has no errors."""
        report = build_config.validate()
        assert report.valid
        assert report.errors == []

    def test_invalid_version(self, config_data):
        """Test non-semver versions are rejected."""
        config_data["version"] = "1.2"
        report = BuildConfig.from_dict(config_data).validate()
        assert not report.valid
        assert any("Invalid version format" in e for e in report.errors)

    def test_collects_every_error(self, config_data):
        """Test all problems are reported together."""
        config_data["version"] = ""
        config_data["architectures"] = ["arm64-v8a", "sparc"]
        config_data["compression"] = "bzip2"
        config_data["staticOptions"] = {"libc": "uclibc", "optimizationLevel": "O9"}
        report = BuildConfig.from_dict(config_data).validate()
        messages = "\n".join(report.errors)
        assert "Missing required field: version" in messages
        assert "sparc" in messages
        assert "bzip2" in messages
        assert "uclibc" in messages
        assert "O9" in messages
        assert len(report.errors) == 5

    def test_invalid_build_mode(self, config_data):
        """Test an unknown mode is an error."""
        config_data["buildMode"] = "hybrid"
        report = BuildConfig.from_dict(config_data).validate()
        assert any("Invalid buildMode" in e for e in report.errors)

    def test_no_architectures(self, config_data):
        """Test an empty architecture list is an error."""
        config_data["architectures"] = []
        report = BuildConfig.from_dict(config_data).validate()
        assert "At least one architecture must be specified" in report.errors

    def test_linux_native_requires_linker(self, config_data):
        """Test linux-native mode needs linkerPath."""
        config_data["buildMode"] = "linux-native"
        config_data["linuxNativeOptions"] = {"libPaths": []}
        report = BuildConfig.from_dict(config_data).validate()
        assert any("linkerPath" in e for e in report.errors)
        assert any("libPaths is empty" in w for w in report.warnings)

    def test_android_native_needs_no_packages(self):
        """Test android-native configs may omit packages."""
        config = BuildConfig.from_dict({"version": "1.0.0", "buildMode": "android-native", "architectures": ["x86_64"]})
        assert config.validate().valid

    def test_static_needs_packages(self, config_data):
        """Test compiled modes need at least one package."""
        config_data["packages"] = {}
        report = BuildConfig.from_dict(config_data).validate()
        assert any("No packages configured" in e for e in report.errors)

    def test_warnings(self, config_data):
        """Test warnings don't invalidate a config."""
        config_data["architectures"] = ["x86_64", "x86_64"]
        config_data["packages"]["busybox"]["checksum"] = None
        config_data["buildModeInfo"] = {"static": {"deprecated": True}}
        report = BuildConfig.from_dict(config_data).validate()
        assert report.valid
        assert "Duplicate architectures in config" in report.warnings
        assert any("no checksum" in w for w in report.warnings)
        assert "Build mode 'static' is deprecated" in report.warnings


class TestLoadConfig:
    """Test cases for load_config."""

    def test_load_valid(self, config_file):
        """Test loading a valid config file."""
        config = load_config(config_file)
        assert config.version == "1.2.0"

    def test_load_invalid_lists_errors(self, tmp_path, config_data):
        """Test an invalid config raises ConfigError with every error."""
        config_data["version"] = "one"
        config_data["compression"] = "rar"
        path = tmp_path / "build-config.json"
        path.write_text(json.dumps(config_data), encoding="utf-8")

        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        assert "Invalid version format" in str(exc_info.value)
        assert "rar" in str(exc_info.value)
