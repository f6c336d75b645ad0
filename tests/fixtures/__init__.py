"""Test fixtures: scripted in-memory process backend and a fake model CLI."""
