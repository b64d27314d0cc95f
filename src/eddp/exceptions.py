class EDDPError(Exception):

    def __init__(self, msg):
        super().__init__(msg)
        self.msg = msg


class ArgumentError(EDDPError):
    pass


class ConfigurationError(EDDPError):
    """
    Unrecoverable configuration problem, e.g., no external evaluator
    backend for the requested mode.

    """
    pass


class FormatError(EDDPError):

    def __init__(self, msg, filename=None):
        if filename is not None:
            msg = "{}: {}".format(filename, msg)
        super().__init__(msg)
        self.filename = filename


class FormatGuessError(EDDPError):

    def __init__(self, filename):
        super().__init__(
            "Failed to guess format of file: {}".format(filename))


class BuildError(EDDPError):
    """
    The external structure builder failed or timed out.

    """
    pass


class RelaxationError(EDDPError):
    pass


class CandidateRejected(EDDPError):
    """
    A relaxed structure did not pass the uncertainty filter.

    """
    pass


class ExternalToolError(EDDPError):

    def __init__(self, msg, returncode=None):
        super().__init__(msg)
        self.returncode = returncode


class JobCancelled(EDDPError):

    def __init__(self, msg="Job cancelled by interrupt."):
        super().__init__(msg)
