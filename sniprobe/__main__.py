from sniprobe.cli import entrypoint

entrypoint()
