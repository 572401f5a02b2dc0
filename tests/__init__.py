"""
Test suite for pilot-orchestrator.

helpers.py holds the fake collaborators (decomposer, generator, workspace,
index) used to drive the orchestration loop without a model or toolchain.
"""
