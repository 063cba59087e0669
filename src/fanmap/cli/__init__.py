"""fanmap command-line interface (``fanmap run``, ``fanmap settings``)."""
