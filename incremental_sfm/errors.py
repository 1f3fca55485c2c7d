class ReconstructionError(Exception):
    """Base class for every failure an estimation stage can report."""


class InsufficientCorrespondences(ReconstructionError):
    def __init__(self, found, required, what="correspondences"):
        self.found = found
        self.required = required
        super().__init__(f"{found} {what}, at least {required} required")


class NoGeometricSolution(ReconstructionError):
    pass


class DegenerateConfiguration(ReconstructionError):
    pass


class NonConvergence(ReconstructionError):
    def __init__(self, message, rms=None):
        self.rms = rms
        super().__init__(message)
