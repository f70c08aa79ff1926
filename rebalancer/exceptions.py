class ConfigError(RuntimeError):
    """
    Meant to be used when an invalid config entry is found, or when the
    rebalancer is built without something it cannot run without.
    """
    pass


class ParseError(Exception):
    pass


class CephError(Exception):
    """
    Base class for failures talking to the cluster
    """
    pass


class CommandFailedError(CephError):

    """
    Exception thrown on command failure
    """
    def __init__(self, command, exitstatus, stderr=None):
        self.command = command
        self.exitstatus = exitstatus
        self.stderr = stderr

    def __str__(self):
        msg = "Command failed with status {status}: {cmd!r}".format(
            status=self.exitstatus,
            cmd=' '.join(self.command),
        )
        if self.stderr:
            msg += ": {err}".format(err=self.stderr.strip())
        return msg


class UnparsableOutputError(CephError):
    def __init__(self, command, output, reason=None):
        self.command = command
        self.output = output
        self.reason = reason

    def __str__(self):
        msg = "Could not parse output of {cmd!r}".format(
            cmd=' '.join(self.command))
        if self.reason:
            msg += ": {reason}".format(reason=self.reason)
        return msg
