"""
Test Suite for Taskhive

- entities: task and project rules
- changelog: stores, remark parsing, review derivation
- approval: the project approval gate
- service and HTTP layer
"""
