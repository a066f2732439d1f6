"""
Events feature module.

Event records, their lifecycle, and the row-level policy deciding who may
view, edit, move, delete or register for each event.
"""
