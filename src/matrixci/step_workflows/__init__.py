from .checks import run_tests, format_check, static_check, cargo_checks, python_checks

__all__ = ["run_tests", "format_check", "static_check", "cargo_checks", "python_checks"]
