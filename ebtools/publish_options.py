"""
Composition of the options passed to `dotnet publish`.
"""

from dataclasses import dataclass
from typing import Optional

from .constants import PLATFORM


@dataclass(frozen=True)
class PublishOptions:
    """
    Final publish options derived from what the user passed plus platform defaults.

    Switch detection is a plain substring match, not tokenization: an option
    value that happens to contain "--runtime " (for example inside a quoted
    MSBuild property) counts as a runtime switch and suppresses the default.
    """
    initial_options: str
    is_windows_target: bool
    self_contained: bool

    def has_runtime(self) -> bool:
        return "-r " in self.initial_options or "--runtime " in self.initial_options

    def has_self_contained(self) -> bool:
        return "--self-contained" in self.initial_options

    def runtime_identifier(self) -> str:
        return PLATFORM.windows_runtime if self.is_windows_target else PLATFORM.linux_runtime

    def to_cli_string(self) -> str:
        options = self.initial_options

        if not self.has_runtime():
            options += f" --runtime {self.runtime_identifier()}"

        if not self.has_self_contained():
            options += f" --self-contained {str(self.self_contained).lower()}"

        return options


def compose(initial_options: Optional[str], is_windows_target: bool, self_contained: bool) -> str:
    """
    Append runtime and self-contained switches unless already present.

    Args:
        initial_options: Raw publish options from the user (may be None)
        is_windows_target: Whether the environment runs Windows
        self_contained: Value for --self-contained when it is appended

    Returns:
        Option string for `dotnet publish`
    """
    return PublishOptions(initial_options or "", is_windows_target, self_contained).to_cli_string()
