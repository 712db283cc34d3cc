"""steprun command-line interface (``steprun render``, ``steprun results``, ``steprun config``)."""
