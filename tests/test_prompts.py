from __future__ import annotations

from typing import Iterable
import io
import unittest

from cibuild.prompts import PromptCancelled, is_valid_target_name, parse_selection, pick_targets, prompt_new_target
from cibuild.targets import ContainerMode, Runner
from core.console import Console


def _answers(values: Iterable[str]):
    iterator = iter(values)

    def _input(prompt: str) -> str:
        try:
            return next(iterator)
        except StopIteration:
            raise EOFError() from None

    return _input


class SelectionTests(unittest.TestCase):
    names = ["linux-amd64", "linux-arm64", "windows-amd64"]

    def test_comma_separated_numbers(self) -> None:
        self.assertEqual(parse_selection("1,3", self.names), ["linux-amd64", "windows-amd64"])

    def test_all_selects_everything(self) -> None:
        self.assertEqual(parse_selection(" ALL ", self.names), self.names)

    def test_invalid_entries_are_ignored(self) -> None:
        self.assertEqual(parse_selection("0, 4, x, 2, 2", self.names), ["linux-arm64"])
        self.assertEqual(parse_selection("", self.names), [])

    def test_pick_targets_shows_platform_descriptions(self) -> None:
        stdout = io.StringIO()
        console = Console("info", stdout=stdout)
        selected = pick_targets(self.names, console=console, input_fn=_answers(["2"]), describe=True)
        self.assertEqual(selected, ["linux-arm64"])
        self.assertIn("2. linux-arm64 (Linux ARM64)", stdout.getvalue())


class WizardTests(unittest.TestCase):
    def setUp(self) -> None:
        self.console = Console("none", stdout=io.StringIO(), stderr=io.StringIO())

    def test_name_validation(self) -> None:
        self.assertTrue(is_valid_target_name("linux_arm-64"))
        self.assertFalse(is_valid_target_name("linux arm"))
        self.assertFalse(is_valid_target_name(""))
        self.assertFalse(is_valid_target_name("list"))

    def test_docker_pull_target(self) -> None:
        answers = _answers(["bad name!", "taken", "linux-arm64", "1", "pull", "", "2", "Debug"])
        target = prompt_new_target(["taken"], console=self.console, input_fn=answers)

        self.assertEqual(target.name, "linux-arm64")
        self.assertEqual(target.runner, Runner.DOCKER)
        self.assertEqual(target.docker.mode, ContainerMode.PULL)
        self.assertEqual(target.docker.image, "ubuntu:22.04")
        self.assertEqual(target.docker.platform, "linux/arm64")
        self.assertEqual(target.build_type, "Debug")

    def test_docker_build_target_asks_for_dockerfile(self) -> None:
        answers = _answers(["arm", "docker", "2", "", "none", "docker/Dockerfile.arm", "docker", ""])
        target = prompt_new_target([], console=self.console, input_fn=answers)

        self.assertEqual(target.docker.mode, ContainerMode.BUILD)
        self.assertEqual(target.docker.image, "cibuild-arm")
        self.assertIsNone(target.docker.platform)
        self.assertEqual(target.docker.build.dockerfile, "docker/Dockerfile.arm")
        self.assertEqual(target.docker.build.context, "docker")
        self.assertEqual(target.build_type, "Release")
        self.assertEqual(target.validate_structure(), [])

    def test_native_target_has_no_container(self) -> None:
        target = prompt_new_target([], console=self.console, input_fn=_answers(["host", "native", "4"]))
        self.assertEqual(target.runner, Runner.NATIVE)
        self.assertIsNone(target.docker)
        self.assertEqual(target.build_type, "MinSizeRel")

    def test_invalid_choice_is_asked_again(self) -> None:
        target = prompt_new_target([], console=self.console, input_fn=_answers(["host", "9", "native", ""]))
        self.assertEqual(target.runner, Runner.NATIVE)

    def test_end_of_input_cancels(self) -> None:
        with self.assertRaises(PromptCancelled):
            prompt_new_target([], console=self.console, input_fn=_answers(["host"]))


if __name__ == "__main__":
    unittest.main()
