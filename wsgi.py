from course_access import create_app

app = create_app()
