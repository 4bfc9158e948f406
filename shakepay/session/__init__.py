"""Session core: authorization state, typed function calls and transitions.

Nothing in this package performs I/O.  The pipeline adapter feeds decoded
function calls in and relays the resulting events out.
"""
