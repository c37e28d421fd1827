from __future__ import annotations

from pathlib import Path
import io
import tempfile
import unittest
from unittest.mock import patch

from cibuild.container import ContainerEngine
from cibuild.dispatch import (
    BAZEL_MARKER,
    MESON_MARKER,
    BuildJob,
    ContainerBazelStrategy,
    ContainerCMakeStrategy,
    ContainerMesonStrategy,
    NativeCMakeStrategy,
    StrategyKind,
    classify,
    create_strategy,
    detect_markers,
)
from cibuild.environment import ImageResolver
from cibuild.errors import BuildError
from cibuild.layout import ProjectLayout
from cibuild.scripts import BuildSettings
from cibuild.targets import ContainerConfig, ContainerMode, Runner, Target
from core.command_runner import RecordingCommandRunner
from core.console import Console


class ClassifyTests(unittest.TestCase):
    def test_native_runner_always_uses_host_cmake(self) -> None:
        markers = frozenset({BAZEL_MARKER, MESON_MARKER})
        self.assertEqual(classify(Runner.NATIVE, markers), StrategyKind.NATIVE_CMAKE)

    def test_container_priority(self) -> None:
        self.assertEqual(classify(Runner.DOCKER, frozenset({BAZEL_MARKER, MESON_MARKER})), StrategyKind.BAZEL)
        self.assertEqual(classify(Runner.DOCKER, frozenset({MESON_MARKER})), StrategyKind.MESON)
        self.assertEqual(classify(Runner.DOCKER, frozenset()), StrategyKind.CMAKE)

    def test_detect_markers(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "meson.build").write_text("project('demo', 'cpp')\n")
            (root / "CMakeLists.txt").write_text("project(demo)\n")
            self.assertEqual(detect_markers(root), frozenset({MESON_MARKER}))


class StrategyTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name) / "demo"
        self.root.mkdir()
        self.layout = ProjectLayout.for_project(self.root, ".bin/ci")
        self.runner = RecordingCommandRunner()
        self.console = Console("none", stdout=io.StringIO(), stderr=io.StringIO())
        self.engine = ContainerEngine(self.runner)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def make_job(self, target: Target, *, dry_run: bool = False) -> BuildJob:
        return BuildJob(
            target=target,
            settings=BuildSettings(build_type="Release", optimization="2", env=dict(target.env)),
            layout=self.layout,
            runner=self.runner,
            engine=self.engine,
            resolver=ImageResolver(self.engine, self.layout, self.console),
            console=self.console,
            dry_run=dry_run,
        )


class ContainerStrategyTests(StrategyTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.target = Target(
            name="linux-amd64",
            docker=ContainerConfig(mode=ContainerMode.PULL, image="ubuntu:22.04", platform="linux/amd64"),
        )
        self.runner.respond(["docker", "images", "-q", "ubuntu:22.04"], stdout="abc\n")

    def test_factory_returns_matching_strategy(self) -> None:
        job = self.make_job(self.target)
        self.assertIsInstance(create_strategy(StrategyKind.CMAKE, job), ContainerCMakeStrategy)
        self.assertIsInstance(create_strategy(StrategyKind.BAZEL, job), ContainerBazelStrategy)
        self.assertIsInstance(create_strategy(StrategyKind.MESON, job), ContainerMesonStrategy)
        self.assertIsInstance(create_strategy(StrategyKind.NATIVE_CMAKE, job), NativeCMakeStrategy)

    def test_cmake_strategy_mounts_workspace_read_only_and_caches(self) -> None:
        strategy = ContainerCMakeStrategy(self.make_job(self.target))
        strategy.execute()

        runs = self.runner.matching("docker", "run")
        self.assertEqual(len(runs), 1)
        command = runs[0].command
        self.assertEqual(command[:5], ["docker", "run", "--rm", "--platform", "linux/amd64"])
        self.assertIn(f"{self.layout.root}:/workspace:ro", command)
        self.assertIn(f"{self.layout.build_dir('linux-amd64')}:/tmp/build", command)
        self.assertIn(f"{self.layout.output_root}:/output", command)
        self.assertIn(f"{self.layout.package_cache_dir('linux-amd64')}:/tmp/.pkg_cache", command)
        self.assertEqual(command[-4:-1], ["ubuntu:22.04", "bash", "-c"])
        self.assertIn("build.ninja", command[-1])
        for directory in self.layout.package_cache_subdirs("linux-amd64"):
            self.assertTrue(directory.is_dir())
        self.assertTrue(self.layout.output_dir("linux-amd64").is_dir())

    def test_bazel_strategy_mounts_shared_repository_cache(self) -> None:
        ContainerBazelStrategy(self.make_job(self.target)).execute()
        command = self.runner.matching("docker", "run")[0].command
        self.assertIn(f"{self.layout.build_dir('linux-amd64')}:/bazel-cache", command)
        self.assertIn(f"{self.layout.bazel_repo_cache}:/bazel-repo-cache", command)
        self.assertTrue(self.layout.bazel_repo_cache.is_dir())

    def test_meson_strategy_mounts_subprojects(self) -> None:
        ContainerMesonStrategy(self.make_job(self.target)).execute()
        command = self.runner.matching("docker", "run")[0].command
        self.assertIn(f"{self.layout.build_dir('linux-amd64')}:/tmp/builddir", command)
        self.assertIn(f"{self.layout.subprojects_dir}:/workspace/subprojects", command)

    def test_failed_container_build_raises_build_error(self) -> None:
        self.runner.respond(["docker", "run"], returncode=2)
        with self.assertRaises(BuildError):
            ContainerCMakeStrategy(self.make_job(self.target)).execute()

    def test_collect_lists_staged_artifacts(self) -> None:
        output_dir = self.layout.output_dir("linux-amd64")
        output_dir.mkdir(parents=True)
        (output_dir / "demo").write_text("binary")
        artifacts = ContainerCMakeStrategy(self.make_job(self.target)).execute()
        self.assertEqual(artifacts, [output_dir / "demo"])


class NativeStrategyTests(StrategyTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.target = Target(name="host", runner=Runner.NATIVE, env={"CC": "clang"})

    def test_configures_when_build_ninja_missing(self) -> None:
        with patch("cibuild.dispatch.shutil.which", return_value="/usr/bin/tool"):
            NativeCMakeStrategy(self.make_job(self.target)).execute()

        commands = [record.command for record in self.runner.matching("cmake")]
        build_dir = str(self.layout.build_dir("host"))
        self.assertEqual(len(commands), 2)
        self.assertEqual(commands[0][:6], ["cmake", "-GNinja", "-B", build_dir, "-S", str(self.layout.root)])
        self.assertEqual(commands[1], ["cmake", "--build", build_dir, "--config", "Release"])
        self.assertEqual(self.runner.commands[0].env, {"CC": "clang"})

    def test_skips_configure_when_already_configured(self) -> None:
        build_dir = self.layout.build_dir("host")
        build_dir.mkdir(parents=True)
        (build_dir / "build.ninja").write_text("")
        with patch("cibuild.dispatch.shutil.which", return_value="/usr/bin/tool"):
            NativeCMakeStrategy(self.make_job(self.target)).execute()

        commands = [record.command for record in self.runner.matching("cmake")]
        self.assertEqual(commands, [["cmake", "--build", str(build_dir), "--config", "Release"]])

    def test_missing_tools_only_warn(self) -> None:
        stdout = io.StringIO()
        self.console = Console("info", stdout=stdout, stderr=io.StringIO())
        with patch("cibuild.dispatch.shutil.which", return_value=None):
            image = NativeCMakeStrategy(self.make_job(self.target)).resolve_environment(False)
        self.assertIsNone(image)
        self.assertIn("[WARN] Native build may fail due to missing tools: cmake, ninja", stdout.getvalue())

    def test_failed_compile_raises_build_error(self) -> None:
        self.runner.respond(["cmake", "--build"], returncode=1)
        with patch("cibuild.dispatch.shutil.which", return_value="/usr/bin/tool"):
            with self.assertRaises(BuildError):
                NativeCMakeStrategy(self.make_job(self.target)).execute()

    def test_copies_artifacts_after_build(self) -> None:
        build_dir = self.layout.build_dir("host")
        build_dir.mkdir(parents=True)
        (build_dir / "build.ninja").write_text("")
        binary = build_dir / "demo"
        binary.write_bytes(b"\x7fELF")
        binary.chmod(0o755)
        with patch("cibuild.dispatch.shutil.which", return_value="/usr/bin/tool"):
            artifacts = NativeCMakeStrategy(self.make_job(self.target)).execute()
        self.assertEqual(artifacts, [self.layout.output_dir("host") / "demo"])

    def test_run_after_executes_primary_binary(self) -> None:
        build_dir = self.layout.build_dir("host")
        build_dir.mkdir(parents=True)
        (build_dir / "build.ninja").write_text("")
        binary = build_dir / "demo"
        binary.write_bytes(b"\x7fELF")
        binary.chmod(0o755)
        with patch("cibuild.dispatch.shutil.which", return_value="/usr/bin/tool"):
            NativeCMakeStrategy(self.make_job(self.target)).execute(run_after=True)
        executed = self.runner.matching(str(self.layout.output_dir("host") / "demo"))
        self.assertEqual(len(executed), 1)

    def test_dry_run_skips_collection(self) -> None:
        with patch("cibuild.dispatch.shutil.which", return_value="/usr/bin/tool"):
            artifacts = NativeCMakeStrategy(self.make_job(self.target, dry_run=True)).execute(run_after=True)
        self.assertEqual(artifacts, [])
        self.assertEqual(len(self.runner.commands), 2)


if __name__ == "__main__":
    unittest.main()
