"""kube-release command line entry point."""

from kube_release.tool.kube_release import main

main()
