import os, multiprocessing

def cpu():
    return max(1, (os.cpu_count() or multiprocessing.cpu_count() or 1))

# Worker processes
workers = int(os.getenv("GUNI_WORKERS", str(min(max(2, cpu() * 2), 8))))

# Threads per worker; gateway calls are blocking HTTP
worker_class = "gthread"
threads = int(os.getenv("GTHREADS", "4"))

# Gateway calls are bounded by HTTP_TIMEOUT_SECS, well under the worker timeout
timeout = int(os.getenv("GUNI_TIMEOUT", "60"))
graceful_timeout = int(os.getenv("GUNI_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNI_KEEPALIVE", "5"))

preload_app = True
max_requests = int(os.getenv("GUNI_MAX_REQUESTS", "2000"))
max_requests_jitter = int(os.getenv("GUNI_MAX_REQUESTS_JITTER", "200"))

bind = os.getenv("GUNI_BIND", "0.0.0.0:8000")
wsgi_app = "config.wsgi:application"

# Application logs are JSON via Django LOGGING; the access log here mirrors request_id
accesslog = "-"
errorlog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)s %(D)sus rid=%({x-request-id}o)s'
loglevel = os.getenv("GUNI_LOGLEVEL", "info")
