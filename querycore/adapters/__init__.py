"""Database adapters. Each subpackage imports its driver library on import."""
