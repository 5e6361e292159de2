"""Operation latency sweep driver.

Runs one or more data-structure benchmark binaries over update loads and core
counts, writing one ``.dat`` table per load with a column group per binary.
"""
