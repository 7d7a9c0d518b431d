"""RosterService facade and command line entry point."""
