"""FastAPI dependencies -- components built in the app lifespan."""

from fastapi import Request

from crawler.apify_client import ApifyClient
from database import Database
from processor.job_manager import JobManager


def get_database(request: Request) -> Database:
    return request.app.state.db


def get_apify_client(request: Request) -> ApifyClient:
    return request.app.state.apify_client


def get_job_manager(request: Request) -> JobManager:
    return request.app.state.job_manager
