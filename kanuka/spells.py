import pathlib
import typing

from .incantations import EnvIncantation, PatternIncantation
from .secrets import SecretKeeper


def kanuka(
        directory: pathlib.Path,
        patterns: typing.Sequence[str] = (),
        encrypting: bool = True) -> SecretKeeper:
    """Select every secret under directory, or only those matching patterns."""
    incantation = (PatternIncantation(patterns=patterns, encrypting=encrypting)
                   if patterns else EnvIncantation())
    return SecretKeeper(
        directory=directory,
        secrets=incantation.secrets(directory))
