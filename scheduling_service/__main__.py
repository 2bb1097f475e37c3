import uvicorn

uvicorn.run("scheduling_service.main:app", host="0.0.0.0", port=8000)
