"""Integration tests that drive boxharness through real processes and sockets."""
