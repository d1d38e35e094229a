"""Keeps quick, timestamped Markdown notes ("jots") in named notebooks on the local filesystem.

If you installed via ``pip``, run ``jotdir -h`` to get help.

To use the Python API, look at :class:`jotdir.api.Jotdir`
"""
