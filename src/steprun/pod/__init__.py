"""Pod synthesis: builder, entrypoint cache, reference substitution, resource helpers.

Import the submodules directly (``steprun.pod.builder``, ``steprun.pod.entrypoint``);
this package does not re-export them.
"""
