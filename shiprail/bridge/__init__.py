"""Adapters to the external collaborators the pipeline sequences.

Each collaborator sits behind a one-method ``Protocol`` so the orchestrator
can be driven by real tools or by the in-memory doubles in ``memory``.

Modules
-------
process
    ``run_tool()`` — bounded subprocess execution with captured diagnostics.
builder
    ``ArtifactBuilder`` protocol and ``DockerBuilder`` (build + push all tags).
scanner
    ``VulnerabilityScanner`` protocol, ``TrivyScanner``, and the JSON / table
    report renderers.
repository
    ``GitOpsRepository`` protocol and ``GitCliRepository`` (git binary).
memory
    In-memory registry, builder, scanner and repository.
"""
