"""RingDEX command-line tools."""
