"""Version-control access: changesets, history and project layout."""

from librarian.vcs.source import ChangesetSource, OnelineCommit
from librarian.vcs.tree import build_file_tree, read_readme

__all__ = ["ChangesetSource", "OnelineCommit", "build_file_tree", "read_readme"]
