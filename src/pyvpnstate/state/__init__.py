"""State layer.

Store, retry countdown and listener registry. None of these are thread
safe on their own; they are owned by the dispatcher's serialized context
and every mutation goes through it.
"""
