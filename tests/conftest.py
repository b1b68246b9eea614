"""Shared diff fixtures and webhook signing."""

import hashlib
import hmac

import pytest

APP_DIFF = "\n".join([
    "diff --git a/src/app.py b/src/app.py",
    "index 1a2b3c4..5d6e7f8 100644",
    "--- a/src/app.py",
    "+++ b/src/app.py",
    "@@ -1,4 +1,5 @@",
    " import os",
    "-import sys",
    "+import json",
    "+import logging",
    " ",
    " def main():",
    "@@ -20,3 +21,3 @@ def main():",
    "     a = 1",
    "-    b = 2",
    "+    b = 3",
    "     return a + b",
    "diff --git a/old.txt b/new.txt",
    "similarity index 100%",
    "rename from old.txt",
    "rename to new.txt",
    "diff --git a/docs/notes.md b/docs/notes.md",
    "new file mode 100644",
    "index 0000000..e69de29",
    "--- /dev/null",
    "+++ b/docs/notes.md",
    "@@ -0,0 +1,2 @@",
    "+# Notes",
    "+First line",
]) + "\n"

# One hunk, one added line at destination line 12
SINGLE_HUNK_DIFF = "\n".join([
    "diff --git a/f b/f",
    "index 1111111..2222222 100644",
    "--- a/f",
    "+++ b/f",
    "@@ -10,5 +10,6 @@ def handler():",
    " line10",
    " line11",
    "+added12",
    " line13",
    " line14",
    " line15",
]) + "\n"


@pytest.fixture
def app_diff():
    return APP_DIFF


@pytest.fixture
def single_hunk_diff():
    return SINGLE_HUNK_DIFF


def sign(body: bytes, secret: str) -> str:
    """X-Hub-Signature value Bitbucket sends for body."""
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


@pytest.fixture
def sign_body():
    return sign
