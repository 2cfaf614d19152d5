"""
OJS Worker

Consumer-side runtime for the Open Job Spec protocol: fetches jobs from an
OJS server, runs them through a middleware pipeline and a registered handler,
and reports ack/nack with bounded concurrency and graceful shutdown.
"""

__version__ = "1.0.0"
