from __future__ import annotations

from pathlib import Path
import tempfile
import textwrap
import unittest

from cibuild.errors import ConfigurationError
from cibuild.targets import (
    BuildDefaults,
    CIConfig,
    ContainerMode,
    PullPolicy,
    Runner,
    Target,
    TargetStore,
    derive_target,
    describe_platform,
)


def _config(*names: str) -> CIConfig:
    return CIConfig(targets=[Target(name=name, runner=Runner.NATIVE) for name in names])


class CIConfigTests(unittest.TestCase):
    def test_from_mapping_parses_targets_and_defaults(self) -> None:
        config = CIConfig.from_mapping(
            {
                "targets": [
                    {
                        "name": "linux-amd64",
                        "runner": "container",
                        "docker": {
                            "mode": "build",
                            "platform": "linux/amd64",
                            "build": {"dockerfile": "docker/Dockerfile", "args": {"GCC": 13, "LTO": True}},
                        },
                        "buildType": "Debug",
                        "env": {"CC": "gcc"},
                        "active": False,
                    },
                    {"name": "host", "runner": "native"},
                ],
                "build": {"type": "Release", "optimization": 3, "jobs": 8, "cmakeArgs": ["-DFOO=ON"]},
            }
        )

        first, second = config.targets
        self.assertEqual(first.runner, Runner.DOCKER)
        self.assertEqual(first.docker.mode, ContainerMode.BUILD)
        self.assertEqual(first.docker.pull_policy, PullPolicy.IF_NOT_PRESENT)
        self.assertEqual(first.docker.build.args, {"GCC": "13", "LTO": "true"})
        self.assertFalse(first.is_active())
        self.assertTrue(second.is_active())
        self.assertEqual(config.build.optimization, "3")
        self.assertEqual(config.build.jobs, 8)
        self.assertEqual(config.output, ".bin/ci")

    def test_duplicate_names_are_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            CIConfig.from_mapping({"targets": [{"name": "a", "runner": "native"}, {"name": "a", "runner": "native"}]})

    def test_unknown_mode_and_policy_are_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            Target.from_mapping({"name": "a", "docker": {"mode": "magic", "image": "x"}})
        with self.assertRaises(ConfigurationError):
            Target.from_mapping({"name": "a", "docker": {"mode": "pull", "image": "x", "pullPolicy": "sometimes"}})

    def test_pull_mode_requires_image(self) -> None:
        with self.assertRaises(ConfigurationError):
            Target.from_mapping({"name": "a", "docker": {"mode": "pull"}})

    def test_target_options_override_defaults_field_by_field(self) -> None:
        defaults = BuildDefaults(build_type="Release", cmake_args=["-DA=1"], build_args=["-v"])
        target = Target(name="t", build_type="Debug", cmake_options=["-DB=2"])
        self.assertEqual(target.effective_build_type(defaults), "Debug")
        self.assertEqual(target.effective_cmake_args(defaults), ["-DB=2"])
        self.assertEqual(target.effective_build_args(defaults), ["-v"])

    def test_remove_target_preserves_order(self) -> None:
        config = _config("a", "b", "c")
        self.assertEqual(config.remove_targets(["b"]), ["b"])
        self.assertEqual(config.names(), ["a", "c"])

    def test_remove_unknown_target_is_a_no_op(self) -> None:
        config = _config("a", "b", "c")
        self.assertEqual(config.remove_targets(["zzz"]), [])
        self.assertEqual(config.names(), ["a", "b", "c"])

    def test_add_duplicate_target_fails(self) -> None:
        config = _config("a")
        with self.assertRaises(ConfigurationError):
            config.add_target(Target(name="a"))

    def test_structure_validation_flags_missing_descriptors(self) -> None:
        self.assertTrue(Target(name="a", runner=Runner.DOCKER).validate_structure())
        self.assertEqual(Target(name="b", runner=Runner.NATIVE).validate_structure(), [])


class TargetStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_missing_file_uses_defaults(self) -> None:
        store = TargetStore(self.root / "cibuild.yaml")
        config = store.load_or_default()
        self.assertEqual(config.targets, [])
        self.assertEqual(config.build.build_type, "Release")
        self.assertEqual(config.build.optimization, "2")
        with self.assertRaises(ConfigurationError):
            store.load()

    def test_save_and_reload_yaml(self) -> None:
        path = self.root / "cibuild.yaml"
        path.write_text(
            textwrap.dedent(
                """
                targets:
                  - name: linux-amd64
                    runner: docker
                    docker:
                      mode: pull
                      image: ubuntu:22.04
                      pullPolicy: always
                  - name: host
                    runner: native
                    active: false
                build:
                  type: Debug
                  jobs: 4
                output: out/ci
                """
            )
        )
        store = TargetStore(path)
        config = store.load()
        config.remove_targets(["host"])
        store.save(config)

        reloaded = store.load()
        self.assertEqual(reloaded.names(), ["linux-amd64"])
        self.assertEqual(reloaded.targets[0].docker.pull_policy, PullPolicy.ALWAYS)
        self.assertEqual(reloaded.build.build_type, "Debug")
        self.assertEqual(reloaded.output, "out/ci")
        self.assertNotIn("active", path.read_text())

    def test_malformed_yaml_is_a_configuration_error(self) -> None:
        path = self.root / "cibuild.yaml"
        path.write_text("targets: [unclosed\n")
        with self.assertRaises(ConfigurationError):
            TargetStore(path).load()


class DerivedTargetTests(unittest.TestCase):
    def test_describe_platform(self) -> None:
        self.assertEqual(describe_platform("linux-arm64"), "Linux ARM64")
        self.assertEqual(describe_platform("darwin-amd64"), "macOS x86_64")
        self.assertEqual(describe_platform("custom"), "")

    def test_derive_target_from_predefined_dockerfile(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            directory = Path(tmp)
            (directory / "Dockerfile.linux-arm64").write_text("FROM debian\n")
            target = derive_target("linux-arm64", directory)
        self.assertEqual(target.docker.mode, ContainerMode.BUILD)
        self.assertEqual(target.docker.platform, "linux/arm64")
        self.assertEqual(target.docker.image, "cibuild-linux-arm64")
        self.assertTrue(target.docker.build.dockerfile.endswith("Dockerfile.linux-arm64"))

    def test_derive_target_without_dockerfile_fails(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(ConfigurationError):
                derive_target("linux-amd64", Path(tmp))


if __name__ == "__main__":
    unittest.main()
