"""Channel communication sweep driver.

Runs a channel micro-benchmark binary over communication modes, server
counts and client counts, writing one ``.dat`` table per (mode, servers).
"""
