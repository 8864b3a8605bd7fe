"""
ebtools - Package .NET applications and deploy them to AWS Elastic Beanstalk.

This package provides a CLI that publishes a .NET project, prepares the
bundle for the target platform (Windows/IIS or Linux) and creates or updates
the Elastic Beanstalk environment that runs it.
"""

__version__ = "0.1.0"
__author__ = "ebtools contributors"
