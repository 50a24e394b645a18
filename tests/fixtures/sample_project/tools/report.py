"""Print a usage report."""

from .helpers import fmt


def main() -> None:
    print(fmt("report"))
