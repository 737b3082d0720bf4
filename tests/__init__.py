"""Test package marker: lets pytest import tests as `tests.test_*`."""
